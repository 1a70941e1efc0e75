"""
Threading and event plumbing shared by the workers, the dispatcher and the radios.
"""
