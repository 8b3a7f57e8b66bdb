from app.core.clock import system_clock
from app.core.database import SessionLocal
from app.services.email_service import EmailService
from app.services.payment_service import PaymentService
from app.services.sms_service import SMSService


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def get_sms_service():
    return SMSService()


def get_email_service():
    return EmailService()


def get_payment_service():
    return PaymentService()


def get_clock():
    return system_clock
