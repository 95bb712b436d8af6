"""
Engine modules for Questline.

- progression: Level catalog and the progression engine
- quests: Quest catalog and the quest engine
- notifications: Notification sink adapter on the EventBus
- engine: Transport-independent gateway returning OperationResult
- shared: Base service/repository and the engine exception hierarchy
"""
