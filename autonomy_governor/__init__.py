"""
Autonomy Governor
=================

Governs how much unsupervised authority an AI recruiting agent may exercise
for each tenant, and re-earns or revokes that authority from measured
alignment with human recruiters.
"""

__version__ = "0.1.0"
