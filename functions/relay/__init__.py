"""
Relay: a small FastAPI service that brokers calls between the mobile/web
client and Agora, Firebase (Firestore, Cloud Messaging, Auth), Cloud Vision
and the Perspective API, and runs the periodic community maintenance jobs.
"""
