"""Spokenwire package for discovering a speech receiver and streaming to it.

This package finds a named zero-configuration (mDNS / DNS-SD) service
instance on the local network, keeps track of the IPv4 addresses it resolves
to, and sends best-effort UDP datagrams to the best of them.
"""
