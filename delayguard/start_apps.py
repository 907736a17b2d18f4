"""
Startup script for the DelayGuard API, Celery worker and Celery beat
Manages all three services with proper logging and error handling
"""

import multiprocessing
import subprocess
import sys
import time
import signal
from pathlib import Path

import redis

from delayguard.config.settings import settings
from delayguard.providers.poll_queue_provider import get_redis_client
from delayguard.utils.logging import get_logger

logger = get_logger()

PROJECT_ROOT = str(Path(__file__).parent.parent)


def setup_signal_handlers():
    """Setup signal handlers for graceful shutdown"""

    def signal_handler(signum, frame):
        logger.info(f"Received signal {signum}, initiating shutdown...")
        raise KeyboardInterrupt

    signal.signal(signal.SIGTERM, signal_handler)
    signal.signal(signal.SIGINT, signal_handler)


def _run(name: str, cmd):
    try:
        logger.info(f"Starting {name} process")
        subprocess.run(cmd, check=True, cwd=PROJECT_ROOT)
    except subprocess.CalledProcessError as e:
        logger.error(f"{name} process failed with return code {e.returncode}: {e}")
        sys.exit(1)
    except KeyboardInterrupt:
        logger.info(f"{name} process interrupted by user")


def run_fastapi_app():
    """Run FastAPI server"""
    _run(
        "FastAPI",
        [
            sys.executable,
            "-m",
            "uvicorn",
            "delayguard.main:app",
            "--host",
            "0.0.0.0",
            "--port",
            "8000",
        ],
    )


def run_celery_worker():
    """Run Celery worker consuming the scheduler and carrier poll queues"""
    _run(
        "Celery worker",
        [
            sys.executable,
            "-m",
            "celery",
            "-A",
            "delayguard.celery",
            "worker",
            "--loglevel=info",
            "-Q",
            "poll-scheduler,carrier-poll",
        ],
    )


def run_celery_beat():
    """Run Celery beat, which ticks the poll scheduler"""
    _run(
        "Celery beat",
        [
            sys.executable,
            "-m",
            "celery",
            "-A",
            "delayguard.celery",
            "beat",
            "--loglevel=info",
        ],
    )


def check_redis_connection() -> bool:
    """Check if Redis server is accessible"""
    try:
        get_redis_client().ping()
    except redis.RedisError as e:
        logger.error(f"Redis connection failed: {e}")
        logger.error(
            f"Please ensure Redis is running on {settings.REDIS_HOST}:{settings.REDIS_PORT}"
        )
        return False

    logger.info("Redis connection successful")
    return True


def monitor_processes(processes):
    """Monitor running processes and handle failures"""
    logger.info("Starting process monitoring")

    while True:
        for process in processes:
            if not process.is_alive():
                logger.error(
                    f"{process.name} process died unexpectedly with exit code: {process.exitcode}"
                )
                terminate_processes(processes)
                sys.exit(1)

        time.sleep(1)


def terminate_processes(processes):
    """Gracefully terminate all processes"""
    logger.info("Initiating graceful shutdown of all services")

    for process in processes:
        if process.is_alive():
            logger.info(f"Terminating {process.name} process")
            process.terminate()

    for process in processes:
        process.join(timeout=10)
        if process.is_alive():
            logger.warning(f"{process.name} did not terminate gracefully, force killing")
            process.kill()
            process.join()
        else:
            logger.info(f"{process.name} terminated successfully")


def main():
    """Main function to start and manage the API, worker and beat"""
    setup_signal_handlers()

    logger.info("=" * 60)
    logger.info(f"Starting {settings.NAME} services (FastAPI + Celery worker + beat)")
    logger.info("=" * 60)

    if not check_redis_connection():
        logger.error("Cannot start services without Redis connection")
        sys.exit(1)

    processes = []

    try:
        for name, target in (
            ("FastAPI", run_fastapi_app),
            ("CeleryWorker", run_celery_worker),
            ("CeleryBeat", run_celery_beat),
        ):
            process = multiprocessing.Process(target=target, name=name, daemon=False)
            process.start()
            processes.append(process)

        logger.info("All services started successfully")
        logger.info("Health check: http://localhost:8000" + settings.API_PREFIX + "/health")
        logger.info("-" * 60)

        monitor_processes(processes)

    except KeyboardInterrupt:
        logger.info("Shutdown signal received")
    finally:
        terminate_processes(processes)
        logger.info("All services stopped successfully")


if __name__ == "__main__":
    main()
