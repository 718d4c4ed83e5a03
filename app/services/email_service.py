"""
AWS SES Email Service for sending password reset codes.

Handles email formatting, template rendering, and AWS SES integration.
"""

import logging
import boto3
from botocore.exceptions import ClientError, BotoCoreError
from app.core.config import settings
from app.core.logging_config import mask_email

logger = logging.getLogger(__name__)


class EmailService:
    """
    Service for sending emails via AWS SES.

    Supports both development (sandbox) and production modes.
    """

    def __init__(self):
        """Initialize AWS SES client"""
        # Configure boto3 client
        session_kwargs = {
            'region_name': settings.AWS_REGION,
        }

        # Add credentials if provided (otherwise uses IAM role)
        if settings.AWS_ACCESS_KEY_ID and settings.AWS_SECRET_ACCESS_KEY:
            session_kwargs['aws_access_key_id'] = settings.AWS_ACCESS_KEY_ID
            session_kwargs['aws_secret_access_key'] = settings.AWS_SECRET_ACCESS_KEY

        self.ses_client = boto3.client('ses', **session_kwargs)

    def send_password_reset_code(
        self,
        to_email: str,
        code: str,
        expires_in_minutes: int = 10,
    ) -> bool:
        """
        Send a password reset code email.

        Never raises: every failure is logged and reported as False so the
        caller's response does not depend on mail delivery.

        Args:
            to_email: Recipient email address
            code: Numeric reset code
            expires_in_minutes: Code lifetime shown to the user

        Returns:
            bool: True if email sent successfully, False otherwise
        """
        subject = "Password Reset Code - MundoCerca"

        # Build HTML email body
        html_body = self._build_reset_code_html(code, expires_in_minutes)
        text_body = self._build_reset_code_text(code, expires_in_minutes)

        try:
            response = self.ses_client.send_email(
                Source=f"{settings.AWS_SES_FROM_NAME} <{settings.AWS_SES_FROM_EMAIL}>",
                Destination={'ToAddresses': [to_email]},
                Message={
                    'Subject': {'Data': subject, 'Charset': 'UTF-8'},
                    'Body': {
                        'Html': {'Data': html_body, 'Charset': 'UTF-8'},
                        'Text': {'Data': text_body, 'Charset': 'UTF-8'}
                    }
                }
            )

            message_id = response.get('MessageId')
            logger.info(f"Password reset email sent to {mask_email(to_email)} (MessageId: {message_id})")
            return True

        except ClientError as e:
            error_code = e.response['Error']['Code']
            error_message = e.response['Error']['Message']
            logger.error(f"AWS SES ClientError: {error_code} - {error_message}")

            if error_code == 'MessageRejected':
                logger.error(f"Email rejected: {error_message}")
            elif error_code == 'MailFromDomainNotVerified':
                logger.error("Sender email not verified in SES")

            return False

        except BotoCoreError as e:
            logger.error(f"AWS BotoCoreError: {str(e)}")
            return False

        except Exception as e:
            logger.error(f"Unexpected error sending email: {str(e)}")
            return False

    def _build_reset_code_html(self, code: str, expires_in_minutes: int) -> str:
        """
        Build HTML email body for the reset code.

        Args:
            code: Numeric reset code
            expires_in_minutes: Code lifetime

        Returns:
            str: HTML email content
        """
        return f"""<!DOCTYPE html>
<html>
<head><meta charset="UTF-8"><title>Password Reset</title></head>
<body style="font-family: Helvetica, Arial, sans-serif; background: #fafaf7; padding: 32px;">
  <div style="max-width: 520px; margin: 0 auto; background: #ffffff; border: 1px solid #e7e5e4; border-radius: 10px; padding: 32px;">
    <h2 style="color: #0f766e; margin-top: 0;">Reset your MundoCerca password</h2>
    <p style="color: #44403c;">Hi there,</p>
    <p style="color: #44403c;">Enter this code in the app to continue:</p>
    <p style="font-size: 30px; font-weight: bold; letter-spacing: 6px; text-align: center; color: #1c1917; background: #f5f5f4; border-radius: 6px; padding: 16px;">{code}</p>
    <p style="color: #78716c; font-size: 14px;">The code expires in <strong>{expires_in_minutes} minutes</strong> and works once.</p>
    <p style="color: #a8a29e; font-size: 12px;">Didn't ask for a reset? Ignore this email and your password stays the same.</p>
  </div>
</body>
</html>
"""

    def _build_reset_code_text(self, code: str, expires_in_minutes: int) -> str:
        """Plain text fallback body for the reset code."""
        text = f"""Hi there,

Your password reset code is: {code}

This code expires in {expires_in_minutes} minutes.

If you did not request this, please ignore this email.

---
MundoCerca - Your trusted marketplace
"""
        return text


# Singleton instance
email_service = EmailService()
