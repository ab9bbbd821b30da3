"""Customer notification package.

Tells the depositor by email that their check has been accepted.  Delivery
is at-least-once: a retried processing stage may send the same message twice.
"""
