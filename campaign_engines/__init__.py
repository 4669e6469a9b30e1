"""
Campaign engines -- pure calculation layer.

Zero I/O, zero database access.  Inputs are frozen DTOs populated by
``campaign_services``; outputs are frozen results the services act on.
"""
