ERROR_MARKER = "error:"


def extract_error_excerpt(text: str) -> str:
    """
    Pull a one-line diagnostic out of a raw job log.

    Each log line is "<timestamp> <message>". Returns the message of the
    first line whose lowercase form contains "error:", or "" when nothing
    matches. Lines without a space carry no timestamp and are skipped.
    """
    for line in text.splitlines():
        _, sep, message = line.partition(" ")
        if not sep:
            continue
        if ERROR_MARKER in message.lower():
            return message
    return ""
