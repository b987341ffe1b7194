"""Mail filer scheduler - runs the batch controller on a fixed period.

Scheduled triggers may overlap; the execution lock in the property store
(PostgreSQL via DATABASE_URL) turns the later one into a "skipped" run.
"""

import logging
import sys
from pathlib import Path

import modal

# Create Modal app
app = modal.App("mailfiler-scheduler")

# Create image with all dependencies
image = (
    modal.Image.debian_slim(python_version="3.12")
    .pip_install(
        "psycopg[binary]==3.2.3",
        "boto3==1.41.2",
        "openai==1.59.5",
        "pydantic==2.12.4",
        "requests==2.32.3",
    )
    .add_local_dir(Path(__file__).parent.parent / "src" / "mailfiler", "/root/mailfiler")
)

# Modal secrets
secrets = [modal.Secret.from_name("mailfiler-secrets")]

logger = logging.getLogger(__name__)


def _run(all_users: bool) -> dict:
    sys.path.insert(0, "/root")

    from mailfiler import BatchRunController, Config, UserRegistry
    from mailfiler.backends import (
        build_mailbox,
        build_property_store,
        build_storage,
        user_mailbox_factory,
    )

    logging.basicConfig(level=logging.INFO)
    logger = logging.getLogger(__name__)

    config = Config.from_env()
    property_store = build_property_store(config)
    storage = build_storage(config)

    logger.info("=" * 80)
    logger.info("MAILFILER RUN STARTED" + (" (all users)" if all_users else ""))
    logger.info("=" * 80)

    if all_users:
        registry = UserRegistry(property_store)
        controller = BatchRunController(config, None, storage, property_store)
        result = controller.run_for_users(registry, user_mailbox_factory(config, registry))
    else:
        mailbox = build_mailbox(config)
        try:
            result = BatchRunController(config, mailbox, storage, property_store).run()
        finally:
            mailbox.close()

    logger.info("=" * 80)
    logger.info(f"MAILFILER RUN {result.status.value.upper()}")
    logger.info("=" * 80)
    logger.info(f"Threads processed: {result.threads_processed}")
    logger.info(f"Attachments saved: {result.attachments_saved}")
    logger.info(f"Attachments skipped: {result.attachments_skipped}")
    logger.info(f"Errors: {len(result.errors)}")

    return result.model_dump(mode="json")


@app.function(
    image=image,
    secrets=secrets,
    schedule=modal.Period(minutes=15),
    timeout=1800,  # stays under the 30 minute execution lock
)
def scheduled_run() -> dict:
    """Periodic run over every registered user."""
    return _run(all_users=True)


@app.function(image=image, secrets=secrets, timeout=1800)
def run_once(all_users: bool = False) -> dict:
    """On-demand run, for the configured mailbox or every registered user."""
    return _run(all_users=all_users)


@app.local_entrypoint()
def main(all_users: bool = False):
    """Local entrypoint for testing.

    Args:
        all_users: Process every registered user instead of GMAIL_EMAIL
    """
    print(f"Running mailfiler with all_users={all_users}")
    result = run_once.remote(all_users=all_users)
    print(f"\nRun Result: {result}")
