"""Meeting core -- lifecycle, admission, and read projections.

Provides the status state machine (MeetingLifecycleManager), join/leave
admission with capacity enforcement (ParticipantAdmissionController),
read-only views (MeetingQueryService), the session issuer, and the
MeetingRepository they all share.
"""
