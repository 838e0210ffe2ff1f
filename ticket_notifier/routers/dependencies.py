import hmac
from typing import Optional

from fastapi import Depends, Header

from ticket_notifier.config.notifier import NotifierConfig
from ticket_notifier.container import get_notifier_config
from ticket_notifier.utils.errors import AuthenticationError


async def verify_callback_token(
    x_callback_token: Optional[str] = Header(default=None),
    config: NotifierConfig = Depends(get_notifier_config),
) -> None:
    """Internal endpoints are open when no token is configured."""
    expected = config.callback_auth_token
    if not expected:
        return
    if not x_callback_token or not hmac.compare_digest(x_callback_token, expected):
        raise AuthenticationError("Invalid or missing callback token")
