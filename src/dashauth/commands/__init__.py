"""Built-in CLI sub-commands for dashauth.

* :mod:`~dashauth.commands.platform` -- classify a host from its user agent.
* :mod:`~dashauth.commands.auth` -- ``login``, ``logout`` and ``status``.
* :mod:`~dashauth.commands.service` -- ``token`` and the ``settings`` group,
  both authorized through the service credential.
* :mod:`~dashauth.commands.config` -- view and modify configuration.

Single commands are plain callbacks registered on the root app; groups are
:class:`typer.Typer` sub-applications.
"""
