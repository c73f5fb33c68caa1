import logging

from fastapi import HTTPException

logger = logging.getLogger(__name__)

UNAVAILABLE_HINTS = {
    "llm": ("openai", "api_key", "authentication", "rate limit"),
    "vector_store": ("qdrant", "connection", "connect", "timed out"),
}


def as_http_500(e: Exception) -> HTTPException:
    """Log exception and return a generic 500 HTTPException (no internal details leaked).
    Why available: Centralized error handling so API never leaks stack traces or internal state to clients."""
    logger.error("unhandled_error", exc_info=(type(e), e, e.__traceback__))
    return HTTPException(status_code=500, detail="Internal server error")


def as_http_error(e: Exception) -> HTTPException:
    """Map an error raised during chat to 503 when the LLM or Qdrant is unreachable, else a generic 500."""
    err_msg = f"{e.__class__.__name__} {e}".lower()
    if any(h in err_msg for h in UNAVAILABLE_HINTS["llm"]):
        logger.warning("llm_unavailable", exc_info=(type(e), e, e.__traceback__))
        return HTTPException(
            status_code=503,
            detail="LLM service unavailable. Check OPENAI_API_KEY and network.",
        )
    if any(h in err_msg for h in UNAVAILABLE_HINTS["vector_store"]):
        logger.warning("vector_store_unavailable", exc_info=(type(e), e, e.__traceback__))
        return HTTPException(
            status_code=503,
            detail="Vector store unavailable. Check Qdrant is running (e.g. docker-compose up -d).",
        )
    return as_http_500(e)
