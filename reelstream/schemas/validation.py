"""Input sanitizing helpers with XSS protection"""

import re
import bleach

# Allowed HTML tags for user input
ALLOWED_TAGS = ['b', 'i', 'u', 'em', 'strong', 'p', 'br']

DANGEROUS_PATTERNS = [
    r'<script[^>]*>',
    r'javascript:',
    r'on\w+\s*=',
    r'<iframe',
]


class SafeStringMixin:
    """Mixin for XSS-safe string validation"""

    @staticmethod
    def sanitize_html(value: str) -> str:
        """Remove dangerous HTML/JavaScript"""
        if not value:
            return value
        return bleach.clean(value, tags=ALLOWED_TAGS, strip=True)

    @staticmethod
    def validate_no_script(value: str) -> str:
        """Block common XSS patterns"""
        if not value:
            return value

        for pattern in DANGEROUS_PATTERNS:
            if re.search(pattern, value, re.IGNORECASE):
                raise ValueError("Invalid characters detected")

        return value

    @classmethod
    def clean_text(cls, value: str) -> str:
        return cls.sanitize_html(cls.validate_no_script(value))

    @staticmethod
    def strip_tags(value: str) -> str:
        """Plain text only, for titles and names"""
        if not value:
            return value
        return bleach.clean(value, tags=[], strip=True).strip()
