"""
SLA Engine Services Module

Contains the calendar, deadline, state machine, escalation and broadcast
logic of the engine. Import from the submodules directly; the connection
manager and the services depend on each other through them.
"""
