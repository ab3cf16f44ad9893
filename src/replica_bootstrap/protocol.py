"""
Text predicates over administrative shell output.

The shell renders command results as text, so success is read from that text:
an ok-indicator, an equality on ``true``, or a host substring. Both the legacy
``mongo`` rendering (``"ok" : 1``) and the ``mongosh`` one (``ok: 1``) are
accepted. Keep every string check in here so a structured driver can replace
it without touching the role paths.
"""

import re

OK_PATTERN = re.compile(r'["\']?\bok["\']?\s*:\s*1(?:\.0)?\b')
AUTH_FAILURE_MARKERS = (
    'Authentication failed',
    'requires authentication',
)
USER_EXISTS_MARKERS = (
    'already exists',
    'createUser requires authentication',
)
ALREADY_INITIALIZED_MARKERS = (
    'already initialized',
    'AlreadyInitialized',
)


class LegacyTextProtocolAdapter:

    def is_ok(self, output):
        return bool(OK_PATTERN.search(output or ''))

    def is_true(self, output):
        return (output or '').strip() == 'true'

    def lists_member(self, output, member):
        return member in (output or '')

    def already_initialized(self, output):
        return any(marker in (output or '') for marker in ALREADY_INITIALIZED_MARKERS)

    def auth_failed(self, output):
        return any(marker in (output or '') for marker in AUTH_FAILURE_MARKERS)

    def user_exists(self, output):
        return any(marker in (output or '') for marker in USER_EXISTS_MARKERS)
