"""wolfchat -- turn-based Werewolf host for text chat groups."""
