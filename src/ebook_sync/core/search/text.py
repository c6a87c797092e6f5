"""Search keyword normalization."""

# Full-width digits and Latin letters map onto ASCII by a fixed offset.
_HALF_WIDTH: dict[int, int] = {
    cp: cp - 0xFEE0
    for block in (range(0xFF10, 0xFF1A), range(0xFF21, 0xFF3B), range(0xFF41, 0xFF5B))
    for cp in block
}
_HALF_WIDTH[0x3000] = 0x20  # ideographic space


def normalize_to_half_width(text: str) -> str:
    """Convert full-width ASCII letters, digits and spaces to half-width."""
    return text.translate(_HALF_WIDTH)


def normalize_keyword(keyword: str) -> str:
    return normalize_to_half_width(keyword.strip()).strip()
