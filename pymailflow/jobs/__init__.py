from .send_mail import SendMailHandler, SEND_MAIL

__all__ = ["SendMailHandler", "SEND_MAIL"]
