"""Language translator backend: translation, speech synthesis and chat for the frontend."""
