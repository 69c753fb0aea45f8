"""
Cheap "is this a task request?" check run before any model call.

Only text that is both short and cue-less is rejected; anything longer is left
for the model to judge (it can still answer with the no-action sentinel).
"""
import re

# CJK keywords match as substrings
CJK_KEYWORDS = (
    "添加", "新增", "新建", "创建", "安排", "记录", "提醒", "设置", "修改", "更新", "更改",
    "删除", "移除", "完成", "归档", "截止", "到期", "优先级", "标签", "备注", "重复",
    "每天", "提前", "买",
)
# Latin keywords match on word boundaries ("set" must not match "upset")
LATIN_KEYWORDS = (
    "add", "create", "new", "update", "set", "change", "edit", "delete", "remove",
    "complete", "finish", "remind", "due", "priority", "tag", "note", "repeat",
    "buy", "call", "pay", "schedule", "todo", "remember",
)

CJK_DATE_CUES = (
    "今天", "明天", "后天", "昨天", "今晚", "明早", "本周", "下周",
    "周一", "周二", "周三", "周四", "周五", "周六", "周日",
)
LATIN_DATE_CUES = (
    "today", "tomorrow", "tmr", "yesterday", "tonight", "this week", "next week",
    "monday", "tuesday", "wednesday", "thursday", "friday", "saturday", "sunday",
)

_LATIN_RE = re.compile(
    r"\b(" + "|".join(re.escape(word) for word in LATIN_KEYWORDS + LATIN_DATE_CUES) + r")\b",
    re.IGNORECASE,
)
_TIME_RE = re.compile(r"\b\d{1,2}:\d{2}\b")
_DATE_RE = re.compile(r"\b\d{4}-\d{1,2}-\d{1,2}\b")

SHORT_TEXT_LIMIT = 8


def has_task_cue(text: str) -> bool:
    if any(word in text for word in CJK_KEYWORDS + CJK_DATE_CUES):
        return True
    return bool(_LATIN_RE.search(text) or _TIME_RE.search(text) or _DATE_RE.search(text))


def is_likely_task_command(text: str) -> bool:
    s = text.strip()
    if not s:
        return False
    if has_task_cue(s):
        return True
    # Short exclamations like "好开心啊!" are never requests
    if len(s) <= SHORT_TEXT_LIMIT and " " not in s:
        return False
    return True
