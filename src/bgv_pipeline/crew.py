from crewai import Agent, Crew, Process, Task
from crewai.project import CrewBase, agent, crew, task

from .models import AiAnalysis
from .router.router import llmrouter
from .tools.client_rules import fetch_client_rules


@CrewBase
class AnalysisCrew:
    """Single-analyst crew that grades a discrepancy set (the optional AI signal)."""

    agents_config = 'config/agents.yaml'
    tasks_config = 'config/tasks.yaml'

    # ──────────────── Agents ────────────────
    @agent
    def analyst(self) -> Agent:
        return Agent(
            config=self.agents_config['analyst'],
            tools=[fetch_client_rules],
            verbose=False,
            llm=llmrouter(),
            max_iter=2,
            allow_delegation=False,
        )

    # ──────────────── Tasks ────────────────
    @task
    def analysis_task(self) -> Task:
        return Task(
            config=self.tasks_config['analysis_task'],
            agent=self.analyst(),
            output_pydantic=AiAnalysis,     # enforce schema at runtime
        )

    # ──────────────── Crew ────────────────
    @crew
    def crew(self) -> Crew:
        return Crew(
            agents=[self.analyst()],
            tasks=[self.analysis_task()],
            process=Process.sequential,
            verbose=False,
        )
