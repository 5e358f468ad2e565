# errors.py


class CommandError(Exception):
    """Recoverable failure while executing a command.

    The message is meant for the user and is shown as a single system line.
    """
    pass
