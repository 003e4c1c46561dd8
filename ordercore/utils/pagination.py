from typing import Tuple


def normalize_paging(page, page_size, max_page_size: int = 100) -> Tuple[int, int]:
    p = _to_int(page)
    ps = _to_int(page_size)
    p = p if p and p > 0 else 1
    ps = ps if ps and ps > 0 else 20
    ps = min(ps, max_page_size)
    return p, ps


def _to_int(value):
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


def page_envelope(items, *, page: int, page_size: int, total: int) -> dict:
    pages = (total + page_size - 1) // page_size if page_size else 0
    return {"items": items, "page": page, "page_size": page_size, "total": total, "pages": pages}
