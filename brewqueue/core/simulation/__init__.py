"""
Offline simulation of the dispatch policy.

Shares only the priority formula with the live dispatcher; never its state.
"""
