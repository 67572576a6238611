import functools
import inspect

from loguru import logger


def logged_job(func):
    """
    A decorator for scheduled coroutine jobs.

    Features:
    - Logs the job name and bound parameters before it runs
    - Logs and swallows failures so one bad run does not kill the schedule
    - Returns the job's result, or None when it failed
    """

    @functools.wraps(func)
    async def wrapper(*args, **kwargs):
        func_name = func.__name__

        bound_args = inspect.signature(func).bind(*args, **kwargs)
        bound_args.apply_defaults()
        params = {k: v for k, v in bound_args.arguments.items() if k != "self"}

        logger.debug(f"Running job {func_name} with params: {params}")
        try:
            result = await func(*args, **kwargs)
            logger.debug(f"Job {func_name} finished")
            return result
        except Exception as e:
            logger.error(f"Job {func_name} failed: {type(e).__name__}: {e}")
            return None

    return wrapper
