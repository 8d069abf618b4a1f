"""Built-in authentication providers.

- :mod:`~dashauth.providers.web_code_flow` -- authorization-code redirect flow.
- :mod:`~dashauth.providers.device_code` -- RFC 8628 device flow.
- :mod:`~dashauth.providers.native_bridge` -- host-native sign-in bridge.
"""
