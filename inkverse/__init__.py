"""InkVerse Muse: conversational intent resolution and write mediation for story projects."""
