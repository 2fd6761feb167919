"""Request/response RPC carried over email.

This package sends commands to a remote filter-control service as email
messages and correlates the asynchronous email replies back to the logical
request that produced them. The transport offers no ordering, no delivery
acknowledgement and may deliver the same reply more than once, so the
controller keeps a set of keyed async ledgers and reconciles them on a
periodic tick:

- Pending requests waiting for a reply
- Replies that arrived before their request was registered
- Transport Message-IDs already processed (duplicate delivery)
- Correlation ids already resolved (late duplicates)

Example:
    Basic usage through the service entry point::

        from mail_rpc.config import load_settings
        from mail_rpc.service import MailRpcService

        async with await MailRpcService.from_settings(load_settings()) as service:
            result = await service.controller.send_request("acct", "usage")

Authors:
    Softwell S.r.l.
    Giovanni Porcari
"""
