"""
Tool Integration Layer.

Game tools the model can call mid-generation: dice rolls, monster and spell
lookups against the D&D 5e SRD API, and multiple-choice prompts for the
player.
"""
