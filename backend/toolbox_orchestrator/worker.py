import os

import redis
from rq import Worker


def main() -> None:
    redis_url = os.environ.get("TOOLYARD_JOBS_REDIS_URL", "redis://redis:6379/0")
    conn = redis.Redis.from_url(redis_url)
    worker = Worker(["default"], connection=conn)
    # The scheduler moves enqueue_in jobs for the polling loops onto the queue.
    worker.work(with_scheduler=True)


if __name__ == "__main__":
    main()
