"""Naming helpers."""

from .naming import (domain_to_namespace, member_to_subject,
                     namespace_to_domain)

__all__ = ["namespace_to_domain", "domain_to_namespace", "member_to_subject"]
