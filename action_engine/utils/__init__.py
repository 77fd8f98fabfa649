

def mask_token(text: str, token: str) -> str:
    return text.replace(token, f"{token[:4]}****") if token else text


def truncate_text(text: str, limit: int, marker: str = "...[truncated]") -> str:
    if limit <= 0 or len(text) <= limit:
        return text
    keep = max(0, limit - len(marker))
    return text[:keep] + marker
