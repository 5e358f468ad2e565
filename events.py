from abc import ABC, abstractmethod

class MessageSink(ABC):
    @abstractmethod
    def show_system_line(self, text): pass
    @abstractmethod
    def show_own_chat(self, text): pass
    @abstractmethod
    def show_own_private(self, peer, text): pass

class UserInterface(ABC):
    @abstractmethod
    def refresh_topic_display(self): pass
    @abstractmethod
    def clear_display(self): pass
    @abstractmethod
    def request_shutdown(self): pass
    @abstractmethod
    def notify_transfer_created(self, transfer): pass
