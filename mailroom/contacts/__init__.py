"""Contacts - mailroom customers and their mailboxes"""

from mailroom.contacts.models import Contact, ContactStatus
from mailroom.contacts.repository import ContactRepository

__all__ = ["Contact", "ContactRepository", "ContactStatus"]
