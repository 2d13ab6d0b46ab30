from reactor.workers.configuration import PERFORM_ABORTED, HandlerUnit
from reactor.workers.mailer_worker import MailerHandlerUnit

__all__ = ["PERFORM_ABORTED", "HandlerUnit", "MailerHandlerUnit"]
