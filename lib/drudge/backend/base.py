import abc

from drudge import domain


class Base(metaclass=abc.ABCMeta):

    @abc.abstractmethod
    def start(self, execute_handler):
        """Begin running jobs, handing each one to execute_handler.

        - May be called more than once. A repeat call shuts down the previous run first; a
          backend never runs two loops at once.

        :param execute_handler: callable taking a domain.Job. It raises if the job failed.

        """
        pass

    @abc.abstractmethod
    def submit(self, job: domain.Job, after=None, queue: str=None) -> str:
        """Accept a job to be run.

        :param job:
        :param after: datetime the job should not run before, None implies asap
        :param queue: name of the queue the job was scheduled on
        :return: str id of the submitted job, as understood by this backend

        """
        pass

    @abc.abstractmethod
    def is_scheduled(self, id_: str) -> bool:
        """Return if the job is still waiting to run (or running).

        :param id_: id returned by submit()
        :return: bool

        """
        pass

    @abc.abstractmethod
    def cancel(self, id_: str):
        """Stop a job from running, if it hasn't been picked up yet.

        :param id_: id returned by submit()

        """
        pass

    @abc.abstractmethod
    def shutdown(self):
        """Stop running jobs & release whatever resources we hold.

        """
        pass
