"""
Chattie - AI-assisted WhatsApp & email replies for small businesses

This service coordinates the customer conversation workflow:
- Receives WhatsApp messages (Twilio / Unipile webhooks)
- Triages inbound customer email from the business mailbox
- Requests structured AI reply suggestions
- Sends replies directly (auto mode) or asks the owner by email (approval mode)
- Handles owner approvals from email replies and the admin dashboard
- Drafts follow-up emails for customers that could not be reached
"""

__version__ = "1.0.0"
