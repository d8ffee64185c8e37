import asyncio

from celery import Task


class AsyncTask(Task):
    """
    Task whose ``run`` is a coroutine function. Prefork children reuse their
    process loop; a solo pool or an eager call gets a private one.
    """

    def __call__(self, *args, **kwargs):
        from examguard.core.celery_app import get_worker_loop

        loop = get_worker_loop()
        if loop is None:
            return asyncio.run(self.run(*args, **kwargs))
        return loop.run_until_complete(self.run(*args, **kwargs))
