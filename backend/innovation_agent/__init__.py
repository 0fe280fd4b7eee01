"""Autonomous innovation agent: problem statements in, ranked solutions out."""
