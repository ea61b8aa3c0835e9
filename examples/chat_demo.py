"""Minimal demonstration of the project chat gateway."""

import sys

from chat_gateway import create_service

if __name__ == "__main__":
    project_id = sys.argv[1] if len(sys.argv) > 1 else "demo-project"
    question = sys.argv[2] if len(sys.argv) > 2 else "What should the team focus on next?"
    service = create_service()
    if service.projects.get(project_id) is None:
        service.save_project(project_id, "Demo Project", "A sample project for the chat gateway", "ACTIVE")
    try:
        reply = service.chat(project_id, question)
        print("User:", question)
        print("Assistant:", reply["content"])
    finally:
        service.close()
