import time
from fastapi import Request
from courier_quotes.core.logger import get_logger

logger = get_logger("request_logger")

async def log_requests(request: Request, call_next):
    start_time = time.time()
    actor_id = request.headers.get("x-actor-id", "anonymous")
    logger.info(f"Started request {request.method} {request.url.path} actor={actor_id}")
    response = await call_next(request)
    duration = time.time() - start_time
    logger.info(
        f"Completed request {request.method} {request.url.path} "
        f"with status={response.status_code} in {duration:.3f}s"
    )
    return response
