"""
Environment configuration, loaded once from backend/.env when present.
"""
from dotenv import load_dotenv
from pathlib import Path
import os

ROOT_DIR = Path(__file__).parent
load_dotenv(ROOT_DIR / '.env')


def _flag(name: str, default: str = "false") -> bool:
    return os.environ.get(name, default).strip().lower() in ("1", "true", "yes", "on")


# MongoDB
MONGO_URL = os.environ.get('MONGO_URL', 'mongodb://localhost:27017')
DB_NAME = os.environ.get('DB_NAME', 'exam_registration')

# Identity provider tokens
JWT_SECRET_KEY = os.environ.get('JWT_SECRET_KEY', 'your-secret-key-change-in-production-2024')
JWT_ALGORITHM = os.environ.get('JWT_ALGORITHM', 'HS256')

# Payment gateway
RAZORPAY_KEY_ID = os.environ.get('RAZORPAY_KEY_ID', '')
RAZORPAY_KEY_SECRET = os.environ.get('RAZORPAY_KEY_SECRET', '')
RAZORPAY_WEBHOOK_SECRET = os.environ.get('RAZORPAY_WEBHOOK_SECRET', '')
RAZORPAY_BASE_URL = os.environ.get('RAZORPAY_BASE_URL', 'https://api.razorpay.com/v1')
GATEWAY_TIMEOUT_SECONDS = float(os.environ.get('GATEWAY_TIMEOUT_SECONDS', '10'))
PAYMENT_CURRENCY = os.environ.get('PAYMENT_CURRENCY', 'INR')

# Registrations
RECEIPT_PREASSIGN = _flag('RECEIPT_PREASSIGN')

# HTTP
CORS_ORIGINS = [o.strip() for o in os.environ.get('CORS_ORIGINS', '*').split(',') if o.strip()]
LOG_LEVEL = os.environ.get('LOG_LEVEL', 'INFO')
