"""
Helpdesk Knowledge Learning & Decision Engine
==============================================

Learns reusable knowledge from resolved helpdesk tickets and decides,
for new tickets, whether an automated answer is safe or a human team
must take over. Every external model call is gated by a rate / cost
governor.
"""

__version__ = "1.0.0"
