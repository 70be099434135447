"""Quiz domain services: session lifecycle, participants, answers, content.

HTTP routes and socket handlers import from here, keeping transport
concerns separated from the coordinator's rules.
"""
