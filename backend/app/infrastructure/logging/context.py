from contextvars import ContextVar

_request_id_ctx: ContextVar[str | None] = ContextVar("request_id", default=None)
_site_id_ctx: ContextVar[str | None] = ContextVar("site_id", default=None)


def set_request_id(request_id: str | None) -> object:
    return _request_id_ctx.set(request_id)


def get_request_id() -> str | None:
    return _request_id_ctx.get()


def reset_request_id(token: object) -> None:
    _request_id_ctx.reset(token)


def set_site_id(site_id: str | None) -> object:
    return _site_id_ctx.set(site_id)


def get_site_id() -> str | None:
    return _site_id_ctx.get()


def reset_site_id(token: object) -> None:
    _site_id_ctx.reset(token)
