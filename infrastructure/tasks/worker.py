"""Entry point for a worker that also runs the beat scheduler.

Production deployments usually start ``celery -A infrastructure.tasks worker``
and ``celery -A infrastructure.tasks beat`` separately; the embedded beat is
convenient for a single-node setup.
"""
from __future__ import annotations

from .config.celery import celery_app


def main() -> None:
    celery_app.worker_main(argv=["worker", "--beat", "--loglevel=INFO", "--hostname=fulfillment@%h"])


if __name__ == "__main__":
    main()
