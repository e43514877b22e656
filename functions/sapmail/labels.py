"""Resolution labels: looked up by name, never created."""

import logging

from .errors import MailProviderError

logger = logging.getLogger("sapmail.labels")


def apply_resolution_label(gmail, thread_id, label_name):
    """
    Attach an existing label to a whole thread.

    Unlike the processed label, a missing resolution label is not created:
    the call logs a warning and returns None.

    Returns:
        the label id applied, or None
    """
    if not label_name:
        logger.warning(f"No resolution label configured, thread {thread_id} left as is")
        return None
    if not thread_id:
        logger.warning(f"No thread id, label '{label_name}' not applied")
        return None

    try:
        label_id = gmail.find_label_id(label_name)
    except MailProviderError as e:
        logger.warning(f"Label lookup for '{label_name}' failed: {e}")
        return None
    if not label_id:
        logger.warning(f"Label '{label_name}' does not exist in the mailbox, thread {thread_id} not labelled")
        return None

    try:
        gmail.apply_label(thread_id, label_id, thread=True)
    except MailProviderError as e:
        logger.warning(f"Could not apply label '{label_name}' to thread {thread_id}: {e}")
        return None
    logger.info(f"Label '{label_name}' applied to thread {thread_id}")
    return label_id
