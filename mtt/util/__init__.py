from mtt.util.misc import (
    DEFAULT_PROJECT,
    DEFAULT_TASK,
    duplicate_key,
    format_duration,
    parse_topic,
    sanitize_input,
)
