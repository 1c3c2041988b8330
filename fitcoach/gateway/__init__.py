"""Gateway factory for the configured text coach backend."""

from typing import Optional
from fitcoach.gateway.base_gateway import BaseGateway


def create_gateway(gateway_type: Optional[str] = None, access_token: Optional[str] = None) -> BaseGateway:
    """Factory function to create a gateway instance based on type.

    Args:
        gateway_type: "function" (hosted ai-chat function) or "completions"
            (direct chat completions); defaults to Config.COACH_GATEWAY_TYPE
        access_token: signed-in user token forwarded to the hosted function

    Returns:
        BaseGateway instance

    Raises:
        ValueError: If gateway_type is not supported
    """
    if gateway_type is None:
        from fitcoach.config import Config
        gateway_type = Config.COACH_GATEWAY_TYPE
    gateway_type = gateway_type.lower()

    if gateway_type == "function":
        from fitcoach.gateway.function_gateway import FunctionGateway
        return FunctionGateway(access_token=access_token)
    elif gateway_type == "completions":
        from fitcoach.gateway.completions_gateway import CompletionsGateway
        return CompletionsGateway()
    else:
        raise ValueError(
            f"Unsupported gateway type: '{gateway_type}'. "
            f"Supported types are: 'function', 'completions'"
        )


__all__ = ["create_gateway", "BaseGateway"]
