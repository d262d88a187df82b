import re

DEFAULT_PROJECT = "Uncategorized"
DEFAULT_TASK = "Task"

_UNSAFE_CHARS = re.compile(r"[<>\"']")


# Strips, removes characters that tend to break markup/CSV, and truncates to max_length. Non-strings become "".
def sanitize_input(value, max_length=100):
    if not isinstance(value, str):
        return ""
    return _UNSAFE_CHARS.sub("", value.strip())[:max_length].strip()


# The case-insensitive identity of a (project, task) pair. Two active timers may never share one.
def duplicate_key(project, task):
    return f"{project.lower()}:{task.lower()}"


# Splits a combined "Project / Task" topic into its sanitized halves, falling back to defaults for an empty half.
# Returns None when there's nothing usable at all.
def parse_topic(topic, max_length=100):
    full_topic = sanitize_input(topic, max_length)
    if not full_topic:
        return None
    parts = [sanitize_input(p, max_length) for p in full_topic.split("/", 1)]
    project = parts[0] or DEFAULT_PROJECT
    task = (parts[1] if len(parts) > 1 else "") or DEFAULT_TASK
    return project, task


def format_duration(seconds):
    """Format seconds as HH:MM:SS. Negative values clamp to zero."""
    seconds = max(0, int(seconds))
    h, rem = divmod(seconds, 3600)
    m, s = divmod(rem, 60)
    return f"{h:02d}:{m:02d}:{s:02d}"
