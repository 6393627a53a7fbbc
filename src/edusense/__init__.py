"""EduSense: academic question answering over uploaded study material."""
